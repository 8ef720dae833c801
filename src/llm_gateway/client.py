"""
Model Client - chat completions 调用层

提供：
- chat: 单次调用，按模型族决定超时和 token 参数名
- chat_stream: SSE 流式调用，可通过 CancelToken 中止
- chat_with_retry: 失败重试 + 备用模型切换
- check_connection: 连接测试
"""
import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp
from loguru import logger

from .cancellation import CancelToken
from .errors import (
    EmptyChoices,
    HttpError,
    ModelCallCanceled,
    ModelError,
    ModelTimeout,
    NoContent,
    ParseError,
)
from .models import (
    DEFAULT_MAX_TOKENS,
    FAST_FAIL_MARKERS,
    REASONING_PREFIXES,
    get_model_max_tokens,
    is_fast_fail_model,
    normalize_api_url,
    token_limit_param,
)


LogCallback = Callable[[str, str], Any]

_LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "success": "SUCCESS",
    "warn": "WARNING",
    "error": "ERROR",
}


@dataclass
class ChatResult:
    """一次成功调用的结果"""
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    attempts: int = 1
    model_switches: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "usage": self.usage,
            "finish_reason": self.finish_reason,
            "attempts": self.attempts,
            "model_switches": [list(switch) for switch in self.model_switches],
        }


def parse_sse_line(line: str) -> Tuple[bool, Optional[str]]:
    """
    解析一行 SSE 数据

    Args:
        line: 原始行文本

    Returns:
        (是否遇到结束标记, 内容增量或 None)
    """
    line = line.strip()
    if not line.startswith("data:"):
        return False, None

    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return True, None

    try:
        chunk = json.loads(data)
    except ValueError:
        return False, None

    if not isinstance(chunk, dict):
        return False, None
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return False, None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    if isinstance(content, str) and content:
        return False, content
    return False, None


class ModelClient:
    """
    OpenAI 兼容的 chat completions 客户端

    超时、重试和备用模型策略都在这里，调用方只需要处理最终结果或异常。
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        model: str = "gpt-5.2",
        fallback_model: Optional[str] = "gpt-5.2-chat",
        timeout: float = 60.0,
        fast_fail_timeout: float = 20.0,
        fast_fail_markers: Iterable[str] = FAST_FAIL_MARKERS,
        reasoning_prefixes: Iterable[str] = REASONING_PREFIXES,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        client_name: str = "task-engine",
    ):
        self.api_url = normalize_api_url(api_url)
        self.api_token = api_token
        self.model = model
        self.fallback_model = fallback_model
        self.timeout = timeout
        self.fast_fail_timeout = fast_fail_timeout
        self.fast_fail_markers = tuple(fast_fail_markers)
        self.reasoning_prefixes = tuple(reasoning_prefixes)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.default_max_tokens = default_max_tokens
        self.client_name = client_name

        self._stats = {
            "total_requests": 0,
            "failed_requests": 0,
            "model_switches": 0,
        }

    def is_fast_fail(self, model: Optional[str]) -> bool:
        return is_fast_fail_model(model, self.fast_fail_markers)

    def timeout_for(self, model: Optional[str]) -> float:
        return self.fast_fail_timeout if self.is_fast_fail(model) else self.timeout

    def build_payload(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        stream: bool = False,
    ) -> Dict[str, Any]:
        """构造请求体；token 上限字段名随模型族变化"""
        limit = max_tokens or get_model_max_tokens(model, self.default_max_tokens)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            token_limit_param(model, self.reasoning_prefixes): limit,
        }
        if stream:
            payload["stream"] = True
        return payload

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Client-Name": self.client_name,
        }
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _emit(self, on_log: Optional[LogCallback], message: str, log_type: str = "info") -> None:
        logger.log(_LOG_LEVELS.get(log_type, "INFO"), message)
        if on_log is None:
            return
        try:
            on_log(message, log_type)
        except Exception as e:
            logger.warning(f"⚠️ [ModelClient] 日志回调失败: {e}")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
        on_log: Optional[LogCallback] = None,
    ) -> ChatResult:
        """
        单次调用

        Args:
            messages: 对话消息列表，不能为空
            model: 模型名称，默认使用配置的模型
            max_tokens: 输出 token 上限，默认查模型表
            temperature: 采样温度
            timeout: 超时秒数，默认按模型族决定
            cancel_token: 取消令牌
            on_log: 额外的日志回调 (message, type)

        Returns:
            ChatResult

        Raises:
            ModelTimeout, HttpError, ParseError, EmptyChoices, NoContent, ModelCallCanceled
        """
        if not messages:
            raise ValueError("messages 不能为空")

        actual_model = model or self.model
        actual_timeout = timeout or self.timeout_for(actual_model)
        payload = self.build_payload(messages, actual_model, max_tokens, temperature)

        request_id = str(uuid.uuid4())[:8]
        self._stats["total_requests"] += 1
        self._emit(
            on_log,
            f"🚀 [LLM-REQ][{request_id}] model={actual_model} | "
            f"messages={len(messages)} | timeout={actual_timeout:g}s",
            "debug",
        )
        start_time = time.perf_counter()

        try:
            status, text = await self._await_guarded(
                self._post(payload, actual_timeout, actual_model),
                actual_timeout,
                cancel_token,
                actual_model,
            )
            result = self._parse_completion(status, text, actual_model)
        except ModelError as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            self._stats["failed_requests"] += 1
            self._emit(
                on_log,
                f"❌ [LLM-ERR][{request_id}] model={actual_model} | latency={latency_ms:.0f}ms | "
                f"error_type={type(e).__name__} | error={e}",
                "error",
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        if result.finish_reason == "length":
            self._emit(on_log, f"⚠️ [LLM-RES][{request_id}] 输出达到 token 上限，内容可能被截断", "warn")
        self._emit(
            on_log,
            f"✅ [LLM-RES][{request_id}] model={result.model} | latency={latency_ms:.0f}ms | "
            f"finish_reason={result.finish_reason}",
            "debug",
        )
        return result

    async def chat_stream(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
        on_log: Optional[LogCallback] = None,
    ) -> AsyncIterator[str]:
        """
        流式调用，逐个产出内容增量

        取消令牌触发后不再产出任何内容，连接随 async with 退出而释放。
        """
        if not messages:
            raise ValueError("messages 不能为空")

        actual_model = model or self.model
        actual_timeout = timeout or self.timeout_for(actual_model)
        payload = self.build_payload(messages, actual_model, max_tokens, temperature, stream=True)
        self._emit(on_log, f"🚀 [LLM-STREAM] model={actual_model} | messages={len(messages)}", "debug")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=actual_timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise HttpError(response.status, error_text[:200], actual_model)

                    while True:
                        if cancel_token is not None and cancel_token.is_canceled:
                            break
                        try:
                            raw = await self._await_guarded(
                                response.content.readline(),
                                None,
                                cancel_token,
                                actual_model,
                                reported_timeout=actual_timeout,
                            )
                        except ModelCallCanceled:
                            break
                        if not raw:
                            break

                        finished, delta = parse_sse_line(raw.decode("utf-8", errors="ignore"))
                        if finished:
                            break
                        if delta and not (cancel_token is not None and cancel_token.is_canceled):
                            yield delta
        except asyncio.TimeoutError as e:
            raise ModelTimeout(actual_timeout, actual_model) from e
        except aiohttp.ClientError as e:
            raise ModelError(f"网络错误: {e}", actual_model) from e

        if cancel_token is not None and cancel_token.is_canceled:
            self._emit(on_log, f"⛔ [LLM-STREAM] model={actual_model} 已取消", "warn")

    async def chat_with_retry(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
        on_log: Optional[LogCallback] = None,
        **options,
    ) -> ChatResult:
        """
        带重试和备用模型切换的调用

        - 默认模型报 unknown_model：切换到备用模型
        - 快速失败模型族超时或 choices 为空：切换到备用模型
        - 其他错误：同一模型重试
        切换也消耗一次尝试机会；全部用尽后抛出最后一次的错误。
        """
        retries = self.max_retries if max_retries is None else max_retries
        current_model = model or self.model
        switches: List[Tuple[str, str]] = []
        last_error: Optional[ModelError] = None

        for attempt in range(retries + 1):
            try:
                result = await self.chat(messages, model=current_model, on_log=on_log, **options)
                result.attempts = attempt + 1
                result.model_switches = switches
                return result
            except ModelCallCanceled:
                raise
            except ModelError as e:
                last_error = e
                self._emit(on_log, f"⚠️ [LLM-RETRY] 第 {attempt + 1} 次调用失败 ({current_model}): {e}", "warn")

                if attempt >= retries:
                    break

                next_model = self._fallback_for(e, current_model)
                if next_model:
                    self._emit(on_log, f"🔄 [LLM-RETRY] 切换模型: {current_model} -> {next_model}", "warn")
                    switches.append((current_model, next_model))
                    self._stats["model_switches"] += 1
                    current_model = next_model
                    continue

                if self.retry_delay:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        raise last_error

    def _fallback_for(self, error: ModelError, current_model: str) -> Optional[str]:
        if not self.fallback_model or current_model == self.fallback_model:
            return None
        if isinstance(error, HttpError) and error.is_unknown_model and current_model == self.model:
            return self.fallback_model
        if isinstance(error, (ModelTimeout, EmptyChoices)) and self.is_fast_fail(current_model):
            return self.fallback_model
        return None

    async def _post(self, payload: Dict[str, Any], timeout: float, model: str) -> Tuple[int, str]:
        """发送请求，返回 (状态码, 响应文本)"""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as response:
                    text = await response.text()
                    return response.status, text
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientError as e:
            raise ModelError(f"网络错误: {e}", model) from e

    async def _await_guarded(
        self,
        awaitable: Awaitable,
        timeout: Optional[float],
        cancel_token: Optional[CancelToken],
        model: str,
        reported_timeout: Optional[float] = None,
    ):
        """
        等待请求完成，同时监听超时和取消令牌

        timeout 为 None 时不额外计时，超时由请求自身抛出；reported_timeout 用于错误信息。
        """
        label = reported_timeout or timeout or 0
        request = asyncio.ensure_future(awaitable)
        waiters = {request}
        cancel_waiter = None
        if cancel_token is not None:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for future in waiters:
                if not future.done():
                    future.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if request in done:
            try:
                return request.result()
            except asyncio.TimeoutError as e:
                raise ModelTimeout(label, model) from e
        if cancel_waiter is not None and cancel_waiter in done:
            raise ModelCallCanceled(model)
        raise ModelTimeout(label, model)

    def _parse_completion(self, status: int, text: str, model: str) -> ChatResult:
        if not 200 <= status < 300:
            raise HttpError(status, (text or "")[:200], model)

        try:
            data = json.loads(text)
        except ValueError as e:
            raise ParseError(f"AI 响应解析失败: {(text or '')[:100]}", model) from e
        if not isinstance(data, dict):
            raise ParseError(f"AI 响应格式错误: {(text or '')[:100]}", model)

        choices = data.get("choices") or []
        if not choices:
            raise EmptyChoices("AI 返回结果为空 (choices 缺失)", model)

        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        content = message.get("content") or message.get("reasoning_content") or ""
        finish_reason = choice.get("finish_reason")
        if not content:
            raise NoContent(finish_reason, model)

        return ChatResult(
            content=content,
            model=data.get("model") or model,
            usage=data.get("usage") or {},
            finish_reason=finish_reason,
        )

    async def check_connection(self, model: Optional[str] = None) -> Dict[str, Any]:
        """
        用一条极短的请求测试连接

        - 默认模型报 unknown_model：改用备用模型，成功时结果带 fallback=True
        - 报错同时提到 max_tokens 和 max_completion_tokens：换另一个 token 参数名再试

        Returns:
            {"success": True, "model": ..., ["fallback": True]}

        Raises:
            ModelError: 所有尝试都失败
        """
        test_model = model or self.model
        use_completion_tokens = token_limit_param(test_model, self.reasoning_prefixes) == "max_completion_tokens"

        result = await self._attempt_connection(test_model, use_completion_tokens)
        if result["success"]:
            return result

        if "unknown_model" in result["error"].lower() and test_model == self.model and self.fallback_model:
            logger.warning(f"⚠️ [ModelClient] 连接测试: {test_model} 不可用，尝试 {self.fallback_model}")
            result = await self._attempt_connection(self.fallback_model, use_completion_tokens)
            if result["success"]:
                return {**result, "fallback": True}

        error = result["error"].lower()
        if "max_tokens" in error and "max_completion_tokens" in error:
            logger.warning("⚠️ [ModelClient] 连接测试: token 参数名不匹配，换另一种参数重试")
            result = await self._attempt_connection(test_model, not use_completion_tokens)
            if result["success"]:
                return result

        raise ModelError(f"连接测试失败: {result['error'][:100] or '未知错误'}", test_model)

    async def _attempt_connection(self, model: str, use_completion_tokens: bool) -> Dict[str, Any]:
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": "Hello"}],
            "max_completion_tokens" if use_completion_tokens else "max_tokens": 10,
        }
        timeout = self.timeout_for(model)
        status, text = await self._await_guarded(self._post(payload, timeout, model), timeout, None, model)
        if 200 <= status < 300:
            logger.info(f"✅ [ModelClient] 连接正常 model={model}")
            return {"success": True, "model": model}
        return {"success": False, "model": model, "status": status, "error": text or ""}

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
