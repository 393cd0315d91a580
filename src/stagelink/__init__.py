"""`stagelink` - presentation layer over a pipeline provenance graph.

Selects the outputs of a pipeline instance and materializes them as a
human-navigable tree of symlinks, and reports the lineage of any file.

Subpackages:
- core: Domain records, provenance store, checksums
- pipeline: Selection, path composition, materialization, lineage report
- schemas: Layered configuration
- contracts: Error taxonomy and invariant checks
"""

__version__ = "0.1.0"
