"""Storage tier resolution.

Layout for a project checked out at <root>:
    <root>/.cairn/memory/          # project tier (committed)
    <root>/.cairn/memory/local/    # local tier (gitignored)
    ~/.cairn/memory/               # global tier
    $CAIRN_ENTERPRISE_PATH         # enterprise tier, when enabled
"""
