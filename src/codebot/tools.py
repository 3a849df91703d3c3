# tools.py
# Tool implementations available to the execute stage.
#
# Each tool declares a pydantic input model. ToolRegistry validates the
# model's tool call against it before execute() runs. Expected failures
# (missing file, non-zero exit) come back as ToolResult(succeeded=False);
# anything unexpected raises and is turned into a failed step upstream.

import asyncio
import contextlib
import logging
import re
import threading
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, ValidationError

from codebot.llm import ChatModel, ModelInvocationError, collect
from codebot.models import ToolResult
from codebot.parsing import strip_quotes
from codebot.prompts import TRANSLATE_TEXT_PROMPT, render
from codebot.registry import ToolValidationError

logger = logging.getLogger(__name__)


class Tool:
    """Capability contract: name, description, input model, async execute."""

    name: str = ""
    description: str = ""
    input_model: type[BaseModel] = BaseModel

    def validate(self, tool_input: Any) -> BaseModel:
        try:
            return self.input_model.model_validate(tool_input)
        except ValidationError as exc:
            raise ToolValidationError(f"Invalid input for {self.name}: {exc}") from exc

    async def execute(self, params: BaseModel) -> ToolResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# File system
# ---------------------------------------------------------------------------


class ReadFileInput(BaseModel):
    path: str = Field(..., min_length=1)
    encoding: str = "utf-8"


class ReadFile(Tool):
    name = "ReadFile"
    description = "Reads a text file and returns its content. Input: {path, encoding?}"
    input_model = ReadFileInput

    async def execute(self, params: ReadFileInput) -> ToolResult:
        return await asyncio.to_thread(self._read, params)

    def _read(self, params: ReadFileInput) -> ToolResult:
        path = Path(params.path)
        if not path.exists():
            return ToolResult(succeeded=False, error_message=f"File not found: {path}")
        if path.is_dir():
            return ToolResult(succeeded=False, error_message=f"Path is a directory: {path}")
        content = path.read_text(encoding=params.encoding)
        return ToolResult(succeeded=True, payload={"path": str(path), "content": content})


class WriteFileInput(BaseModel):
    path: str = Field(..., min_length=1)
    content: str = ""


class WriteFile(Tool):
    name = "WriteFile"
    description = "Writes text to a file, creating parent directories. Input: {path, content}"
    input_model = WriteFileInput

    async def execute(self, params: WriteFileInput) -> ToolResult:
        return await asyncio.to_thread(self._write, params)

    def _write(self, params: WriteFileInput) -> ToolResult:
        path = Path(params.path)
        if path.is_dir():
            return ToolResult(succeeded=False, error_message=f"Path is a directory: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        data = params.content.encode("utf-8")
        path.write_bytes(data)
        return ToolResult(succeeded=True, payload={"path": str(path), "bytes": len(data)})


class ListFilesInput(BaseModel):
    path: str = Field(..., min_length=1)
    patterns: list[str] = Field(default_factory=list)
    recursive: bool = False


class ListFiles(Tool):
    name = "ListFiles"
    description = (
        "Lists directory entries. Glob patterns filter the listing; recursive walks "
        "subdirectories. Input: {path, patterns?, recursive?}"
    )
    input_model = ListFilesInput

    async def execute(self, params: ListFilesInput) -> ToolResult:
        return await asyncio.to_thread(self._list, params)

    def _list(self, params: ListFilesInput) -> ToolResult:
        root = Path(params.path)
        if not root.is_dir():
            return ToolResult(succeeded=False, error_message=f"Not a directory: {root}")

        if params.patterns:
            found: set[Path] = set()
            for pattern in params.patterns:
                matches = root.rglob(pattern) if params.recursive else root.glob(pattern)
                found.update(matches)
        else:
            found = set(root.rglob("*") if params.recursive else root.iterdir())

        files = [
            {"name": entry.name, "path": str(entry), "is_directory": entry.is_dir()}
            for entry in sorted(found)
        ]
        return ToolResult(succeeded=True, payload={"path": str(root), "files": files})


class SearchFilesInput(BaseModel):
    path: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)


class SearchFiles(Tool):
    name = "SearchFiles"
    description = "Searches text files below a path for a regular expression. Input: {path, pattern}"
    input_model = SearchFilesInput

    max_matches = 200

    async def execute(self, params: SearchFilesInput) -> ToolResult:
        return await asyncio.to_thread(self._search, params)

    def _search(self, params: SearchFilesInput) -> ToolResult:
        root = Path(params.path)
        if not root.exists():
            return ToolResult(succeeded=False, error_message=f"Path not found: {root}")
        try:
            regex = re.compile(params.pattern)
        except re.error as exc:
            return ToolResult(succeeded=False, error_message=f"Invalid pattern {params.pattern!r}: {exc}")

        candidates = [root] if root.is_file() else sorted(p for p in root.rglob("*") if p.is_file())
        matches: list[dict] = []
        for file in candidates:
            try:
                lines = file.read_text(encoding="utf-8").splitlines()
            except (UnicodeDecodeError, OSError):
                # binary or unreadable
                continue
            for number, line in enumerate(lines, start=1):
                if regex.search(line):
                    matches.append({"file": str(file), "line": number, "content": line})
                    if len(matches) >= self.max_matches:
                        break
            if len(matches) >= self.max_matches:
                logger.info("SearchFiles stopped at %d matches", self.max_matches)
                break

        return ToolResult(
            succeeded=True,
            payload={"path": str(root), "pattern": params.pattern, "matches": matches},
        )


# ---------------------------------------------------------------------------
# Terminal
# ---------------------------------------------------------------------------


class ExecuteCommandInput(BaseModel):
    command: str = Field(..., min_length=1)
    cwd: str | None = None
    timeout: float | None = Field(default=None, gt=0)


class ExecuteCommand(Tool):
    name = "ExecuteCommand"
    description = "Runs a shell command and returns stdout, stderr and exit code. Input: {command, cwd?, timeout?}"
    input_model = ExecuteCommandInput

    def __init__(self, default_timeout: float = 30.0) -> None:
        self.default_timeout = default_timeout

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            # already exited between the check and the kill
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    async def execute(self, params: ExecuteCommandInput) -> ToolResult:
        timeout = params.timeout or self.default_timeout
        process = await asyncio.create_subprocess_shell(
            params.command,
            cwd=params.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.CancelledError:
            # the shell must not outlive the request
            self._kill(process)
            raise
        except asyncio.TimeoutError:
            self._kill(process)
            await process.wait()
            return ToolResult(
                succeeded=False,
                error_message=f"Command timed out after {timeout:g}s: {params.command}",
            )

        payload = {
            "stdout": stdout.decode("utf-8", errors="replace"),
            "stderr": stderr.decode("utf-8", errors="replace"),
            "exit_code": process.returncode,
        }
        if process.returncode != 0:
            message = payload["stderr"].strip() or f"Command exited with code {process.returncode}"
            return ToolResult(succeeded=False, payload=payload, error_message=message)
        return ToolResult(succeeded=True, payload=payload)


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


class MemoryStore:
    """Session key-value store. Safe to share between concurrent requests."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str) -> Any:
        with self._lock:
            return self._data[key]

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class StoreMemoryInput(BaseModel):
    key: str = Field(..., min_length=1)
    value: Any = None


class StoreMemory(Tool):
    name = "StoreMemory"
    description = "Stores a value in session memory under a key. Input: {key, value}"
    input_model = StoreMemoryInput

    def __init__(self, memory: MemoryStore) -> None:
        self._memory = memory

    async def execute(self, params: StoreMemoryInput) -> ToolResult:
        self._memory.set(params.key, params.value)
        return ToolResult(succeeded=True, payload={"key": params.key})


class RetrieveMemoryInput(BaseModel):
    key: str = Field(..., min_length=1)


class RetrieveMemory(Tool):
    name = "RetrieveMemory"
    description = "Reads a value previously stored in session memory. Input: {key}"
    input_model = RetrieveMemoryInput

    def __init__(self, memory: MemoryStore) -> None:
        self._memory = memory

    async def execute(self, params: RetrieveMemoryInput) -> ToolResult:
        try:
            value = self._memory.get(params.key)
        except KeyError:
            return ToolResult(succeeded=False, error_message=f"Key not found: {params.key}")
        return ToolResult(succeeded=True, payload={"key": params.key, "value": value})


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------

LANGUAGE_NAMES = {"en": "English", "ko": "Korean"}

_HANGUL = re.compile(r"[ㄱ-ㅎㅏ-ㅣ가-힣]")
_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()?\"']")

# Used only when the model cannot be reached.
FALLBACK_WORDS = {
    "hello": "안녕하세요",
    "world": "세계",
    "file": "파일",
    "folder": "폴더",
    "directory": "디렉토리",
    "create": "생성",
    "read": "읽기",
    "write": "쓰기",
    "update": "업데이트",
    "delete": "삭제",
    "search": "검색",
    "error": "오류",
    "success": "성공",
    "command": "명령어",
    "language": "언어",
    "code": "코드",
    "analysis": "분석",
    "translation": "번역",
}


def detect_language(text: str) -> str:
    return "ko" if _HANGUL.search(text) else "en"


def fallback_translate(text: str, target: str) -> str:
    """Word-by-word replacement through FALLBACK_WORDS, keeping punctuation."""
    table = FALLBACK_WORDS if target == "ko" else {v: k for k, v in FALLBACK_WORDS.items()}
    words = []
    for word in text.split(" "):
        bare = _PUNCTUATION.sub("", word)
        replacement = table.get(bare.lower())
        words.append(word.replace(bare, replacement) if bare and replacement else word)
    return " ".join(words)


class TranslateTextInput(BaseModel):
    text: str = Field(..., min_length=1)
    target_language: Literal["en", "ko"] = Field(default="en", alias="targetLanguage")
    source_language: Literal["en", "ko", "auto"] = Field(default="auto", alias="sourceLanguage")


class TranslateText(Tool):
    name = "translate_text"
    description = (
        "Translates text between English and Korean. "
        "Input: {text, targetLanguage ('en'|'ko'), sourceLanguage ('en'|'ko'|'auto')}"
    )
    input_model = TranslateTextInput

    def __init__(self, model: ChatModel) -> None:
        self._model = model

    async def execute(self, params: TranslateTextInput) -> ToolResult:
        source = params.source_language
        if source == "auto":
            source = detect_language(params.text)
        target = params.target_language

        payload = {
            "source_language": source,
            "target_language": target,
            "original_text": params.text,
            "translated_text": params.text,
            "fallback": False,
        }
        if source == target:
            return ToolResult(succeeded=True, payload=payload)

        messages = render(
            TRANSLATE_TEXT_PROMPT,
            source_language=LANGUAGE_NAMES[source],
            target_language=LANGUAGE_NAMES[target],
            text=params.text,
        )
        try:
            translated = (await collect(self._model, messages)).strip()
        except ModelInvocationError as exc:
            logger.warning("Translation model unavailable, using word map: %s", exc)
            payload["translated_text"] = fallback_translate(params.text, target)
            payload["fallback"] = True
            return ToolResult(succeeded=True, payload=payload)

        payload["translated_text"] = strip_quotes(translated) or params.text
        return ToolResult(succeeded=True, payload=payload)


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def _normalize_translate_input(tool_input: dict[str, Any]) -> dict[str, Any]:
    # Models often emit snake_case names and quote the text twice.
    normalized = dict(tool_input)
    if "input_text" in normalized:
        normalized.setdefault("text", normalized.pop("input_text"))
    if "target_language" in normalized:
        normalized.setdefault("targetLanguage", normalized.pop("target_language"))
    if isinstance(normalized.get("text"), str):
        normalized["text"] = strip_quotes(normalized["text"])
    return normalized


INPUT_NORMALIZERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    TranslateText.name: _normalize_translate_input,
}


def normalize_tool_input(tool_name: str, tool_input: Any) -> Any:
    """Reshape a model-emitted tool input before validation. Unknown tools pass through."""
    normalizer = INPUT_NORMALIZERS.get(tool_name)
    if normalizer is None or not isinstance(tool_input, dict):
        return tool_input
    return normalizer(tool_input)


def build_tools(memory: MemoryStore, model: ChatModel, command_timeout: float = 30.0) -> list[Tool]:
    return [
        ReadFile(),
        WriteFile(),
        ListFiles(),
        SearchFiles(),
        ExecuteCommand(default_timeout=command_timeout),
        StoreMemory(memory),
        RetrieveMemory(memory),
        TranslateText(model),
    ]
