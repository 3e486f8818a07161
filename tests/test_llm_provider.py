from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from botlocal.services.llm import LLMError, OpenAICompatibleProvider


def _response(status_code=200, content="Hello!", body=None):
    response = Mock()
    response.status_code = status_code
    response.text = "error body"
    response.json.return_value = body if body is not None else {
        "model": "llama-3.3-70b-versatile",
        "choices": [{"message": {"content": content}}],
        "usage": {"total_tokens": 12},
    }
    return response


@pytest.fixture
def mock_http():
    with patch("botlocal.services.llm.openai_compatible.httpx.Client") as mock_client_class:
        client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = client
        yield client


def _provider(**kwargs):
    return OpenAICompatibleProvider(
        api_key="test-key",
        base_url="https://llm.test/v1/chat/completions",
        default_model="test-model",
        **kwargs,
    )


class TestOpenAICompatibleProvider:
    def test_returns_content(self, mock_http):
        mock_http.post.return_value = _response(content="Hi there")

        result = _provider().generate([{"role": "user", "content": "hi"}])

        assert result.content == "Hi there"
        assert result.usage == {"total_tokens": 12}
        payload = mock_http.post.call_args.kwargs["json"]
        assert payload["model"] == "test-model"
        assert "response_format" not in payload
        assert mock_http.post.call_args.kwargs["headers"]["Authorization"] == "Bearer test-key"

    def test_json_mode_requests_json_object(self, mock_http):
        mock_http.post.return_value = _response(content="{}")

        _provider().generate([{"role": "user", "content": "x"}], json_mode=True)

        assert mock_http.post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}

    def test_retries_once_on_server_error(self, mock_http):
        mock_http.post.side_effect = [_response(status_code=503), _response(content="recovered")]

        result = _provider().generate([{"role": "user", "content": "hi"}])

        assert result.content == "recovered"
        assert mock_http.post.call_count == 2

    def test_gives_up_after_second_timeout(self, mock_http):
        mock_http.post.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(LLMError) as exc_info:
            _provider().generate([{"role": "user", "content": "hi"}])

        assert exc_info.value.transient is True
        assert mock_http.post.call_count == 2

    def test_does_not_retry_client_error(self, mock_http):
        mock_http.post.return_value = _response(status_code=401)

        with pytest.raises(LLMError) as exc_info:
            _provider().generate([{"role": "user", "content": "hi"}])

        assert exc_info.value.status_code == 401
        assert mock_http.post.call_count == 1

    def test_empty_content_is_an_error(self, mock_http):
        mock_http.post.return_value = _response(body={"choices": []})

        with pytest.raises(LLMError):
            _provider().generate([{"role": "user", "content": "hi"}])
        assert mock_http.post.call_count == 1
