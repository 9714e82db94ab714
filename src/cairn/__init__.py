"""Cairn: a file-backed knowledge store for coding assistants.

Records (decisions, learnings, artifacts, gotchas, breadcrumbs, hubs) are
Markdown files with YAML frontmatter, mirrored into a flat index and linked
in a graph, per storage tier:

    enterprise  $CAIRN_ENTERPRISE_PATH       (opt-in)
    local       <project>/.cairn/memory/local (gitignored)
    project     <project>/.cairn/memory
    global      ~/.cairn/memory

See cairn.api.MemoryService for the request surface.
"""

__version__ = "0.1.0"
