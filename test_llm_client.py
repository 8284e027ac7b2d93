import json
import logging

import httpx
import pytest
import yaml

from llm_join import (
    AuthenticationError,
    ConfigurationError,
    EmptyMessageError,
    EndpointNotFoundError,
    LLMConnectionError,
    LLMRequestConfig,
    MalformedResponseError,
    ServiceError,
    chat_llm,
    mark_verified,
    probe_llm_service,
    read_config_file,
    set_llm,
    validate_llm_config,
)

URL = "https://llm.example.com/v1/chat/completions"
CONFIG = LLMRequestConfig(url=URL, api_key="sk-test")


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _ok(request):
    return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})


class TestChatLLM:
    def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return _ok(request)

        with _client(handler) as client:
            assert chat_llm("tell a joke.", CONFIG, client=client) == "hello"

        assert seen["headers"]["authorization"] == "Bearer sk-test"
        assert seen["headers"]["content-type"] == "application/json"
        assert seen["body"] == {
            "model": "gpt-4.1-mini",
            "messages": [{"role": "user", "content": "tell a joke."}],
            "temperature": 0.0,
            "max_tokens": 1000,
        }

    @pytest.mark.parametrize("message", ["", "   ", None])
    def test_empty_message(self, message):
        with pytest.raises(EmptyMessageError):
            chat_llm(message, CONFIG)

    def test_temperature_clamped_with_warning(self, caplog):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return _ok(request)

        with caplog.at_level(logging.WARNING, logger="llm_join.llm"), _client(handler) as client:
            chat_llm("hi", CONFIG, temperature=1.5, client=client)

        assert seen["body"]["temperature"] == 1.0
        assert "Temperature must be between 0 and 1" in caplog.text

    def test_401(self):
        with _client(lambda r: httpx.Response(401, text="bad key")) as client:
            with pytest.raises(AuthenticationError):
                chat_llm("hi", CONFIG, client=client)

    def test_404(self):
        with _client(lambda r: httpx.Response(404, text="nope")) as client:
            with pytest.raises(EndpointNotFoundError):
                chat_llm("hi", CONFIG, client=client)

    def test_other_status_carries_body(self):
        with _client(lambda r: httpx.Response(503, text="overloaded")) as client:
            with pytest.raises(ServiceError) as info:
                chat_llm("hi", CONFIG, client=client)
        assert info.value.status_code == 503
        assert "overloaded" in str(info.value)

    def test_missing_choices(self):
        with _client(lambda r: httpx.Response(200, json={"id": "x"})) as client:
            with pytest.raises(MalformedResponseError) as info:
                chat_llm("hi", CONFIG, client=client)
        assert '"id"' in str(info.value)

    def test_missing_content(self):
        with _client(lambda r: httpx.Response(200, json={"choices": [{"message": {}}]})) as client:
            with pytest.raises(MalformedResponseError):
                chat_llm("hi", CONFIG, client=client)

    def test_invalid_json(self):
        with _client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(MalformedResponseError) as info:
                chat_llm("hi", CONFIG, client=client)
        assert "<html>" in str(info.value)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with _client(handler) as client:
            with pytest.raises(LLMConnectionError):
                chat_llm("hi", CONFIG, client=client)

    def test_connect_error_is_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            with pytest.raises(ConnectionError):
                chat_llm("hi", CONFIG, client=client)


class TestProbe:
    def test_working(self):
        with _client(_ok) as client:
            status = probe_llm_service(CONFIG, client=client)
        assert status.success
        assert status.message == "Service is working"

    def test_minimal_body(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return _ok(request)

        with _client(handler) as client:
            probe_llm_service(CONFIG, client=client)
        assert seen["body"]["max_tokens"] == 1
        assert seen["body"]["model"] == "gpt-4.1-nano"

    def test_auth_failure(self):
        with _client(lambda r: httpx.Response(401)) as client:
            status = probe_llm_service(CONFIG, client=client)
        assert not status.success
        assert "Authentication failed" in status.message

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            status = probe_llm_service(CONFIG, client=client)
        assert status.message.startswith("Connection error:")


class TestConfigStore:
    def test_set_and_read(self, tmp_path):
        path = set_llm(URL, "sk-abc", path=tmp_path / "llm.yml")
        section = read_config_file(path)
        assert section["LLM_URL"] == URL
        assert section["LLM_key"] == "sk-abc"
        assert "VERIFIED" not in section

    def test_env_var_path(self, tmp_path, monkeypatch):
        target = tmp_path / "env.yml"
        monkeypatch.setenv("LLMJOIN_CONFIG", str(target))
        set_llm(URL, "sk-abc")
        assert target.exists()

    def test_set_requires_both(self, tmp_path):
        with pytest.raises(ConfigurationError):
            set_llm(URL, None, path=tmp_path / "llm.yml")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            read_config_file(tmp_path / "absent.yml")

    def test_missing_key(self, tmp_path):
        path = tmp_path / "llm.yml"
        path.write_text(yaml.safe_dump({"default": {"LLM_URL": URL}}), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            read_config_file(path)

    def test_verified_file_skips_network(self, tmp_path):
        path = set_llm(URL, "sk-abc", path=tmp_path / "llm.yml")
        mark_verified(path)

        def handler(request):
            raise AssertionError("no request expected")

        with _client(handler) as client:
            config = validate_llm_config(path, client=client, model="gpt-4o")
        assert config.verified
        assert config.model == "gpt-4o"
        assert config.api_key == "sk-abc"

    def test_first_validation_marks_file(self, tmp_path):
        path = set_llm(URL, "sk-abc", path=tmp_path / "llm.yml")
        methods = []

        def handler(request):
            methods.append(request.method)
            return _ok(request)

        with _client(handler) as client:
            config = validate_llm_config(path, client=client)

        assert methods == ["HEAD", "POST"]
        assert config.verified
        assert read_config_file(path)["VERIFIED"] is True

    def test_failed_probe(self, tmp_path):
        path = set_llm(URL, "sk-abc", path=tmp_path / "llm.yml")

        def handler(request):
            if request.method == "HEAD":
                return httpx.Response(405)
            return httpx.Response(401)

        with _client(handler) as client:
            with pytest.raises(ConfigurationError):
                validate_llm_config(path, client=client)
        assert "VERIFIED" not in read_config_file(path)

    def test_bad_url_scheme(self, tmp_path):
        path = set_llm("llm.example.com", "sk-abc", path=tmp_path / "llm.yml")
        with pytest.raises(ConfigurationError):
            validate_llm_config(path)

    def test_unreachable_host(self, tmp_path):
        path = set_llm(URL, "sk-abc", path=tmp_path / "llm.yml")

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            with pytest.raises(ConfigurationError, match="Cannot reach URL"):
                validate_llm_config(path, client=client)

    def test_repr_hides_key(self):
        assert "sk-test" not in repr(CONFIG)
