"""
Tool Calls - Parsing model output into typed tool invocations

The model requests a tool by emitting a single JSON object:

    {"tool": "read_file", "args": {"path": "src/App.tsx"}}

Anything that does not yield such an object is the model's final answer.
"""

import json
import logging
import re
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from orchestrator.errors import ToolArgumentError

logger = logging.getLogger(__name__)

# Anchored on the "tool" / "args" keys; args body is matched lazily.
STRICT_TOOL_PATTERN = re.compile(r'\{\s*"tool"\s*:\s*"[^"]+"\s*,\s*"args"\s*:\s*\{[\s\S]*?\}\s*\}')
# Widest brace span in the text, for calls wrapped in prose or markdown.
LOOSE_OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ReadFileArgs(ToolArgs):
    path: str


class WriteToFileArgs(ToolArgs):
    path: str
    content: str


class RunCommandArgs(ToolArgs):
    command: str


class ListFilesArgs(ToolArgs):
    path: str = "."


class ReadFileCall(BaseModel):
    tool: Literal["read_file"] = "read_file"
    args: ReadFileArgs


class WriteToFileCall(BaseModel):
    tool: Literal["write_to_file"] = "write_to_file"
    args: WriteToFileArgs


class RunCommandCall(BaseModel):
    tool: Literal["run_command"] = "run_command"
    args: RunCommandArgs


class ListFilesCall(BaseModel):
    tool: Literal["list_files"] = "list_files"
    args: ListFilesArgs


class UnrecognizedToolCall(BaseModel):
    tool: str
    args: Dict[str, Any]


ToolCall = Union[ReadFileCall, WriteToFileCall, RunCommandCall, ListFilesCall, UnrecognizedToolCall]

KNOWN_TOOLS = {
    "read_file": ReadFileCall,
    "write_to_file": WriteToFileCall,
    "run_command": RunCommandCall,
    "list_files": ListFilesCall,
}


def extract_tool_payload(text: str) -> Optional[Dict[str, Any]]:
    """
    Find a raw {tool, args} object in model output.

    The strict pattern is tried first so incidental braces in prose are not
    mistaken for a call. If it finds nothing, or what it finds does not
    decode, the widest brace span containing "tool" is tried.

    Args:
        text: Model reply

    Returns:
        The decoded object if it names a tool and carries an args object,
        else None
    """
    if not text:
        return None

    candidates = []
    strict = STRICT_TOOL_PATTERN.search(text)
    if strict:
        candidates.append(strict.group(0))
    loose = LOOSE_OBJECT_PATTERN.search(text)
    if loose and '"tool"' in loose.group(0):
        candidates.append(loose.group(0))

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug(f"[TOOLS] Failed to parse tool call candidate: {e}")
            continue
        if (
            isinstance(payload, dict)
            and isinstance(payload.get("tool"), str)
            and payload["tool"]
            and isinstance(payload.get("args"), dict)
        ):
            return payload
    return None


def parse_tool_call(text: str) -> Optional[ToolCall]:
    """
    Parse model output into a tool call.

    Args:
        text: Model reply

    Returns:
        A typed call, UnrecognizedToolCall for unknown tool names, or None
        when the reply is a final answer

    Raises:
        ToolArgumentError: If a known tool is named with unusable arguments
    """
    payload = extract_tool_payload(text)
    if payload is None:
        return None
    return build_tool_call(payload)


def build_tool_call(payload: Dict[str, Any]) -> ToolCall:
    """
    Turn a raw {tool, args} object into its typed variant.

    Raises:
        ToolArgumentError: If a known tool is named with unusable arguments
    """
    call_type = KNOWN_TOOLS.get(payload["tool"])
    if call_type is None:
        return UnrecognizedToolCall(tool=payload["tool"], args=payload["args"])

    try:
        return call_type.model_validate({"tool": payload["tool"], "args": payload["args"]})
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'args'}: {error['msg']}"
            for error in e.errors()
        )
        raise ToolArgumentError(payload["tool"], details)
