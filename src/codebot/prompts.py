# prompts.py
# Prompt templates, one per model-calling stage.
#
# Templates use str.format named placeholders; literal JSON braces are
# doubled. Placeholders receive JSON-serialized context fragments.

import json
from typing import Any

from pydantic import BaseModel

SYSTEM_PROMPT = "You are Codebot, a professional coding assistant."


TRANSLATE_INPUT_PROMPT = """\
Your task is to translate the user's request into English.

User Request:
{user_request}

Output format:
---message start---
<translated message>
---message end---

Translate this request into English. Provide only the translation without additional explanation.\
"""


TASK_ANALYSIS_PROMPT = """\
Your task is to analyze the user's request and categorize it into logical subtasks.

User Request:
{user_request}

First, determine if this is a simple response query that does not require any tools \
(explaining a concept, providing documentation, offering code examples from memory).

If it is a simple response query:
- Set task_type to "simple_response"
- Leave subtasks empty

If it requires tools (creating or editing files, reading or analyzing file contents, \
running commands, inspecting the project):
- Choose the appropriate task_type
- Break it down into subtasks
- For each subtask, state what needs to be done, which tools might be needed, and its dependencies

Respond in JSON format:
{{
  "task_type": "simple_response | code_creation | code_modification | code_analysis | environment_setup",
  "subtasks": [
    {{
      "id": "1",
      "description": "...",
      "potential_tools": ["..."],
      "dependencies": ["..."]
    }}
  ]
}}\
"""


PLANNING_PROMPT = """\
Your task is to create a detailed plan to perform the following tasks.

Task Analysis:
{task_analysis}

Available Tools:
{available_tools}

Create a step-by-step plan. For each step, specify:
1. What to do
2. Which tool to use, with its inputs
3. How to validate the result

If no tool is needed at all, return a single step whose tool is "direct_response".

Respond in JSON format:
{{
  "plan": [
    {{
      "step_id": "1",
      "action": "...",
      "tool": "...",
      "tool_inputs": {{}},
      "validation": "..."
    }}
  ]
}}\
"""


EXECUTE_STEP_PROMPT = """\
Your task is to execute the next step in the plan.

Current Step:
{current_step}

Available Tools:
{available_tools}

If this step needs a tool, respond with exactly one tool call in the following format:
{{
  "tool": "tool_name",
  "input": {{
    "parameter1": "value1"
  }}
}}

If the step needs no tool, reply in plain text without any JSON.\
"""


VERIFY_RESULT_PROMPT = """\
Your task is to verify the execution results and handle any errors.

Execution Results:
{execution_results}

Original Plan:
{original_plan}

Determine:
1. Whether all steps were completed successfully
2. Whether any errors occurred and, if so, how they can be resolved
3. Whether additional steps are needed

Respond in JSON format:
{{
  "success": true,
  "errors": [
    {{
      "step_id": "...",
      "error": "...",
      "resolution": "..."
    }}
  ],
  "additional_steps": [
    {{
      "step_id": "...",
      "action": "...",
      "tool": "...",
      "tool_inputs": {{}},
      "validation": "..."
    }}
  ]
}}\
"""


GENERATE_RESPONSE_PROMPT = """\
Your task is to generate the final response to the user.

Original Request:
{original_request}

Execution Results:
{execution_results}

Verification Report:
{verification_report}

Generate a clear and useful response. Include:
1. A summary of the tasks performed
2. Any problems encountered and how they were resolved
3. Suggested next steps for the user

Your response should be friendly and professional.\
"""


DIRECT_RESPONSE_PROMPT = """\
Your task is to answer the user's request directly, without using any external tools.

Original Request:
{original_request}

Task Analysis:
{task_analysis}

Answer from your own knowledge:
1. If you provide code examples, format and explain them
2. If you explain a concept, be thorough but accessible

Your response should be friendly and professional.\
"""


HANDLE_ERROR_PROMPT = """\
Your task is to handle an error that has occurred.

Error Information:
{error_info}

Context:
{context}

Determine:
1. The cause of the error
2. Possible solutions
3. A clear explanation for the user

Respond in JSON format:
{{
  "error_type": "...",
  "cause": "...",
  "resolution": "...",
  "user_message": "..."
}}\
"""


TRANSLATE_TEXT_PROMPT = """\
You are a professional translator.
Translate the following text from {source_language} to {target_language}.
Provide only the translation without explanations or comments.

Text to translate: "{text}"

Translation:\
"""


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def to_json(value: Any) -> str:
    """Serialize a context fragment for prompt substitution."""
    if isinstance(value, BaseModel):
        return value.model_dump_json(indent=2)
    if isinstance(value, list):
        value = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def render(template: str, **fields: str) -> list[dict]:
    """Build chat messages for one stage call."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": template.format(**fields)},
    ]
