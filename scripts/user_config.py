"""stagelink User Configuration.

This is the user-facing configuration file. Modify settings here to choose
what gets linked and how the tree is laid out. Expert defaults are in
stagelink.schemas.param.

Usage:
    python scripts/materialize_outputs.py scripts/user_config.py
    python scripts/materialize_outputs.py scripts/user_config.py --dry-run
    python scripts/materialize_outputs.py scripts/user_config.py --stage bwa_map
"""

CONFIG = {
    # ========================================================================
    # STORE & TARGET
    # ========================================================================
    "DATABASE": "/lustre/project/provenance.db",
    "INSTANCE": "exome_mapping",          # pipeline instance name or id
    "OUTPUT_ROOT": "/lustre/project/links",

    # ========================================================================
    # SELECTION
    # ========================================================================
    "STAGES": ["bwa_map|bam", "mark_duplicates"],  # name or position, optional |kind
    "METADATA_FILTER": {"sample": "^NA"},          # key -> regex, all must match
    "INCLUDE_WITHDRAWN": False,

    # ========================================================================
    # LAYOUT (one directory mode, one basename mode)
    # ========================================================================
    "GROUP_BY": ["sample", "library"],    # or "MIRROR_INPUT": True
    "HASH_LEVELS": 0,                     # >0 spreads large trees over hashed dirs
    "AS_OUTPUT": True,                    # or "AS_INPUT": "token", or
                                          # "FROM_METADATA": "%sample%_%lane%"

    # Regex rewrites, applied in order ("search=>replacement" or pairs)
    "DIR_REWRITES": [],
    "NAME_REWRITES": [(r"\.sorted", "")],

    # ========================================================================
    # BEHAVIOUR
    # ========================================================================
    "DRY_RUN": False,
    "FORCE_OVERWRITE": False,             # only ever replaces symlinks
    "FAIL_FAST": False,
    "STRICT_EXIT": False,
    "LOG_LEVEL": "INFO",
}
