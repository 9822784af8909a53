"""Chat provider for OpenAI-compatible ``/chat/completions`` endpoints.

Talks to the endpoint directly with ``httpx`` so self-hosted gateways
(vLLM, Ollama, LiteLLM, ...) work without an SDK. Supports both plain JSON
responses and Server-Sent Events streaming. Streamed tool calls arrive as
fragments keyed by ``index``; they are accumulated and emitted as complete
``ToolCall``s on the final delta.
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from codeloop_ai.core.logging_config import get_logger

from ..errors import ProviderError, TransientProviderError
from ..schemas.domain import TokenUsage, ToolCall
from .base import ChatDelta, ChatMessage, ChatOptions, ToolNameMap, ToolSchema

logger = get_logger(__name__)

_TRANSIENT_STATUS = frozenset({408, 409, 425, 429})


@dataclass
class _PartialToolCall:
    id: str = ""
    name: str = ""
    arguments: List[str] = field(default_factory=list)


class OpenAICompatibleChatProvider:
    """Chat provider speaking the OpenAI chat completions protocol.

    Args:
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer token; omitted from requests when ``None``.
        provider_id: Registry id for this adapter.
        timeout: Request timeout in seconds.
        client: Optional shared ``httpx.AsyncClient``. When omitted a client
            is created per request.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        provider_id: str = "openai_compatible",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self.id = provider_id

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_payload(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        options: ChatOptions,
        names: ToolNameMap,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": [_wire_message(m, names) for m in messages],
            "stream": options.stream,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": names.to_wire(t.name),
                        "description": t.description,
                        "parameters": t.parameters or {"type": "object", "properties": {}},
                    },
                }
                for t in tools
            ]
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        if options.stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def send(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        options: ChatOptions,
    ) -> AsyncIterator[ChatDelta]:
        names = ToolNameMap(tools)
        payload = self.build_payload(messages, tools, options, names)
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            if options.stream:
                async for delta in self._send_streaming(client, payload, names):
                    yield delta
            else:
                yield await self._send_once(client, payload, names)
        except httpx.TransportError as exc:
            raise TransientProviderError(f"{self.id}: transport error: {exc}", provider=self.id) from exc
        finally:
            if self._client is None:
                await client.aclose()

    async def _send_once(self, client: httpx.AsyncClient, payload: Dict[str, Any], names: ToolNameMap) -> ChatDelta:
        resp = await client.post(self.endpoint, json=payload, headers=self._headers())
        self._raise_for_status(resp)
        try:
            body = resp.json()
            message = body["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.id}: malformed completion response", provider=self.id) from exc
        if not isinstance(message, dict):
            raise ProviderError(f"{self.id}: malformed completion message", provider=self.id)

        calls = []
        for call in _objects(message.get("tool_calls"), "tool call", self.id):
            fn = _object(call.get("function"), "tool call function", self.id)
            call_id, name = _text(call.get("id")) or "", _text(fn.get("name")) or ""
            calls.append(_normalize_call(call_id, name, fn.get("arguments"), names))
        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise ProviderError(f"{self.id}: malformed completion content", provider=self.id)
        return ChatDelta(
            text=content or "",
            tool_calls=tuple(calls),
            usage=_usage(body.get("usage")),
            model_name=_text(body.get("model")),
            done=True,
        )

    async def _send_streaming(
        self, client: httpx.AsyncClient, payload: Dict[str, Any], names: ToolNameMap
    ) -> AsyncIterator[ChatDelta]:
        partial: Dict[int, _PartialToolCall] = {}
        usage: Optional[TokenUsage] = None
        model_name: Optional[str] = None

        headers = {**self._headers(), "Accept": "text/event-stream"}
        async with client.stream("POST", self.endpoint, json=payload, headers=headers) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                self._raise_for_status(resp)
            async for line in resp.aiter_lines():
                line = line.strip()
                if not line or line.startswith(":") or not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise ProviderError(f"{self.id}: malformed stream chunk: {data[:80]}", provider=self.id) from exc

                chunk = _object(chunk, "stream chunk", self.id)
                model_name = _text(chunk.get("model")) or model_name
                usage = _usage(chunk.get("usage")) or usage
                for choice in _objects(chunk.get("choices"), "stream choice", self.id):
                    delta = _object(choice.get("delta"), "stream delta", self.id)
                    content = delta.get("content")
                    if content:
                        if not isinstance(content, str):
                            raise ProviderError(f"{self.id}: malformed stream content", provider=self.id)
                        yield ChatDelta(text=content)
                    for frag in _objects(delta.get("tool_calls"), "tool call fragment", self.id):
                        index = frag.get("index", 0)
                        if not isinstance(index, int):
                            raise ProviderError(f"{self.id}: malformed tool call index", provider=self.id)
                        slot = partial.setdefault(index, _PartialToolCall())
                        slot.id = _text(frag.get("id")) or slot.id
                        fn = _object(frag.get("function"), "tool call function", self.id)
                        slot.name = _text(fn.get("name")) or slot.name
                        if fn.get("arguments"):
                            slot.arguments.append(str(fn["arguments"]))

        calls = tuple(
            _normalize_call(p.id, p.name, "".join(p.arguments), names) for _, p in sorted(partial.items())
        )
        yield ChatDelta(tool_calls=calls, usage=usage, model_name=model_name, done=True)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        detail = resp.text[:200]
        if status in _TRANSIENT_STATUS or status >= 500:
            raise TransientProviderError(f"{self.id}: HTTP {status}: {detail}", provider=self.id, status_code=status)
        raise ProviderError(f"{self.id}: HTTP {status}: {detail}", provider=self.id, status_code=status)


def _wire_message(msg: ChatMessage, names: ToolNameMap) -> Dict[str, Any]:
    if msg.role == "tool":
        return {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
    out: Dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.role == "assistant" and msg.tool_calls:
        out["content"] = msg.content or None
        out["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": names.to_wire(call.name), "arguments": json.dumps(call.arguments)},
            }
            for call in msg.tool_calls
        ]
    return out


def _normalize_call(call_id: str, name: str, raw_args: Any, names: ToolNameMap) -> ToolCall:
    if isinstance(raw_args, dict):
        arguments = raw_args
    elif not raw_args:
        arguments = {}
    else:
        try:
            arguments = json.loads(raw_args)
        except json.JSONDecodeError:
            logger.warning(f"Tool call {name} carried non-JSON arguments")
            arguments = {"_raw_arguments": raw_args}
        if not isinstance(arguments, dict):
            arguments = {"_raw_arguments": raw_args}
    kwargs: Dict[str, Any] = {"name": names.from_wire(name), "arguments": arguments}
    if call_id:
        kwargs["id"] = call_id
    return ToolCall(**kwargs)


def _object(value: Any, what: str, provider: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProviderError(f"{provider}: malformed {what}: got {type(value).__name__}", provider=provider)
    return value


def _objects(value: Any, what: str, provider: str) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ProviderError(f"{provider}: malformed {what} list: got {type(value).__name__}", provider=provider)
    return [_object(item, what, provider) for item in value]


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _usage(raw: Any) -> Optional[TokenUsage]:
    if not isinstance(raw, dict) or not raw:
        return None
    try:
        return TokenUsage(
            input_tokens=int(raw.get("prompt_tokens") or 0),
            output_tokens=int(raw.get("completion_tokens") or 0),
        )
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed usage block: {raw!r:.120}")
        return None
