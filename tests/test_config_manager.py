import json
import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from tekton_agent.core.config_manager import DEFAULT_CONFIG, AgentConfig, ConfigManager
from tekton_agent.core.exceptions import ConfigurationError

_CLEAN_ENV = {k: v for k, v in os.environ.items()
              if not k.startswith("TEKTON_AGENT_") and not k.startswith("OPENAI_")}


class TestConfigManager(unittest.TestCase):

    def setUp(self):
        self.tmp = TemporaryDirectory()
        self.config_file = Path(self.tmp.name) / "tekton-agent.config.json"
        self.env = patch.dict(os.environ, _CLEAN_ENV, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self.tmp.cleanup()

    def _manager(self, **kwargs):
        return ConfigManager(config_file=self.config_file, load_env_file=False, **kwargs)

    def test_defaults_without_file_or_env(self):
        manager = self._manager()
        for key, value in DEFAULT_CONFIG.items():
            self.assertEqual(manager.get(key), value)

    def test_tier_order_overrides_env_file_defaults(self):
        self.config_file.write_text(json.dumps({"max_retries": 5, "max_memories": 7, "state_dir": "from-file"}))
        os.environ["TEKTON_AGENT_MAX_RETRIES"] = "6"
        os.environ["TEKTON_AGENT_STATE_DIR"] = "from-env"

        manager = self._manager(overrides={"state_dir": "from-override"})

        self.assertEqual(manager.get("max_memories"), 7)
        self.assertEqual(manager.get("max_retries"), 6)
        self.assertEqual(manager.get("state_dir"), "from-override")

    def test_openai_env_mapping(self):
        os.environ["OPENAI_API_KEY"] = "sk-from-env"
        os.environ["OPENAI_MODEL"] = "gpt-test"
        manager = self._manager()
        self.assertEqual(manager.get("openai_api_key"), "sk-from-env")
        self.assertEqual(manager.get("openai_model"), "gpt-test")

    def test_invalid_value_falls_back_to_default(self):
        os.environ["TEKTON_AGENT_AUTO_APPLY_THRESHOLD"] = "1.5"
        with patch("tekton_agent.core.config_manager.log_json") as mock_log_json:
            value = self._manager().get("auto_apply_threshold")
        self.assertEqual(value, DEFAULT_CONFIG["auto_apply_threshold"])
        self.assertEqual(mock_log_json.call_args[0][:2], ("ERROR", "config_value_invalid"))

    def test_string_values_are_coerced(self):
        os.environ["TEKTON_AGENT_MAX_MEMORIES"] = "25"
        os.environ["TEKTON_AGENT_ENABLE_LLM"] = "no"
        manager = self._manager()
        self.assertEqual(manager.get("max_memories"), 25)
        self.assertIs(manager.get("enable_llm"), False)

    def test_malformed_file_raises(self):
        self.config_file.write_text("{broken")
        with self.assertRaises(ConfigurationError):
            self._manager()

    def test_non_object_file_raises(self):
        self.config_file.write_text("[1, 2]")
        with self.assertRaises(ConfigurationError):
            self._manager()

    def test_runtime_override_refreshes(self):
        manager = self._manager()
        manager.set_runtime_override("max_retries", 0)
        self.assertEqual(manager.get("max_retries"), 0)
        self.assertEqual(manager.show_config()["max_retries"], 0)


class TestAgentConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = TemporaryDirectory()
        self.env = patch.dict(os.environ, _CLEAN_ENV, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self.tmp.cleanup()

    def _config(self, **overrides):
        manager = ConfigManager(config_file=Path(self.tmp.name) / "none.json", overrides=overrides,
                                load_env_file=False)
        return AgentConfig.from_manager(manager)

    def test_llm_enabled_follows_api_key(self):
        self.assertFalse(self._config().enable_llm)
        self.assertTrue(self._config(openai_api_key="sk-x").enable_llm)
        self.assertFalse(self._config(openai_api_key="sk-x", enable_llm=False).enable_llm)

    def test_summary_hides_api_key(self):
        summary = self._config(openai_api_key="sk-secret-value").summary()
        self.assertNotIn("openai_api_key", summary)
        self.assertNotIn("sk-secret-value", json.dumps(summary))

    def test_from_manager_matches_defaults(self):
        self.assertEqual(self._config(), AgentConfig())


if __name__ == "__main__":
    unittest.main()
