"""mcp_eval

MCP Server Workflow Evaluation Harness

Submodules
----------
config         - constants, environment overrides, logging, system prompt
config_loader  - JSON evaluation config -> EvalConfig (${VAR} expansion, jsonschema)
models         - dataclasses and enums
errors         - exception hierarchy
utils          - shared helpers (env, JSON, error classification, stats)
tool_schema    - tool input schemas as tagged nodes, pydantic validation
connection     - session lifecycle, transports, Azure AD auth, tool calls
trace_store    - bounded record of messages, tool calls, tool results
llm            - language-model collaborator (OpenAI chat completions)
agent          - async LLM <-> MCP agent loop over workflow steps
evaluator      - deterministic workflow metrics
tool_health    - direct tool-health suites
performance    - compaction and metrics sampling
runner         - sequential / parallel orchestration
reporting      - JSON payload, CSV flattening, Markdown report
main           - orchestration entrypoint (CLI)
"""
