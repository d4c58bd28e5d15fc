import pytest

from tekton_agent.core.exceptions import SchemaError
from tekton_agent.tekton.validator import TektonTaskValidator
from tests.fakes.fake_collaborators import INVALID_TASK_YAML, VALID_TASK_YAML


@pytest.fixture
def validator():
    return TektonTaskValidator()


def test_valid_task_returns_parsed_document(validator):
    document = validator.validate(VALID_TASK_YAML)
    assert document["metadata"]["name"] == "build-image"


def test_wrong_kind_and_api_version_are_reported(validator):
    with pytest.raises(SchemaError) as excinfo:
        validator.validate(INVALID_TASK_YAML)
    message = str(excinfo.value)
    assert message.startswith("Tekton Task schema validation failed:")
    assert any(e.startswith("apiVersion:") for e in excinfo.value.errors)
    assert any(e.startswith("kind:") for e in excinfo.value.errors)
    assert any("'spec' is a required property" in e for e in excinfo.value.errors)


def test_steps_must_not_be_empty(validator):
    text = VALID_TASK_YAML.split("  steps:")[0] + "  steps: []\n"
    with pytest.raises(SchemaError) as excinfo:
        validator.validate(text)
    assert any(e.startswith("spec/steps:") for e in excinfo.value.errors)


def test_param_type_is_restricted(validator):
    text = VALID_TASK_YAML.replace("type: string", "type: integer")
    with pytest.raises(SchemaError):
        validator.validate(text)


def test_unparseable_yaml_raises_schema_error(validator):
    with pytest.raises(SchemaError, match="could not be parsed"):
        validator.validate("apiVersion: [oops")


def test_errors_for_non_mapping(validator):
    assert validator.errors_for(["not", "a", "task"])
