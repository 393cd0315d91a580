"""Command-line entry points.

- run_materialize: ``stagelink-materialize``
- run_lineage: ``stagelink-lineage``
"""
