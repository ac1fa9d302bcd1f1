"""
Tool modules exposed through the /mcp endpoint.

Every public module here is imported by registry.py. A tool is either a
concrete MCPTool subclass defined in the module or a coroutine registered
with @tool. Modules whose names start with "_" are skipped.
"""
