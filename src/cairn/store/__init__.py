"""Record store: files, Index and Graph for one scope directory.

Layout:
    <scope-dir>/
    ├── index.json          # {"version": "1.0.0", "lastUpdated": ..., "memories": [...]}
    ├── graph.json          # {"version": 1, "nodes": [...], "edges": [...]}
    ├── embeddings.json     # see cairn.search
    ├── permanent/<id>.md   # decision, learning, artifact, gotcha, hub
    └── temporary/<id>.md   # breadcrumb

Record files are the source of truth; index.json and graph.json can be
rebuilt or reconciled from them.
"""
