"""
Tool definitions and implementations for the coding agent.
Each tool has a schema and an implementation function.
Tools use a Backend abstraction for file/command operations.
"""

from tools._common import ToolResult  # noqa: F401
from tools.gitignore import invalidate_gitignore_cache, BACKUP_DIR_NAME  # noqa: F401
from tools.file_ops import (  # noqa: F401
    read_file,
    write_file,
    edit_file,
    create_directory,
    validate_content,
    list_backups,
)
from tools.search_ops import (  # noqa: F401
    list_directory,
    file_search,
    text_search,
    codebase_overview,
)
from tools.external_ops import (  # noqa: F401
    run_command,
    git_changes,
    web_fetch,
    web_search,
    is_blocked_command,
)
from tools.editor_ops import EditorHost, get_selection, get_current_file, get_problems  # noqa: F401
from tools.schemas import (  # noqa: F401
    TOOL_DEFINITIONS,
    TOOL_IMPLEMENTATIONS,
    TOOL_NAMES,
    TOOL_NAME_NORMALIZE,
    COMPLETE_TOOL_NAME,
    DEPENDENT_TOOLS,
    INDEPENDENT_TOOLS,
    FILE_MUTATING_TOOLS,
    normalize_tool_name,
    get_tool_descriptions,
)
from tools.dispatch import execute_tool, normalize_tool_inputs  # noqa: F401
