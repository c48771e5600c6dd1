"""
Literature housekeeping genes used to report overlap with the selected stable genes.

The list combines the classic qPCR reference genes with the highly uniform human
housekeeping genes reported by Eisenberg & Levanon (2013). It is informational only
and never drives selection.
"""

CLASSIC_REFERENCE_GENES = (
    "ACTB",
    "B2M",
    "GAPDH",
    "GUSB",
    "HMBS",
    "HPRT1",
    "PGK1",
    "PPIA",
    "RPL13A",
    "RPLP0",
    "SDHA",
    "TBP",
    "TFRC",
    "UBC",
    "YWHAZ",
)

EISENBERG_LEVANON_GENES = (
    "C1orf43",
    "CHMP2A",
    "EMC7",
    "GPI",
    "PSMB2",
    "PSMB4",
    "RAB7A",
    "REEP5",
    "SNRPD3",
    "VCP",
    "VPS29",
)

LITERATURE_HOUSEKEEPING_GENES = frozenset(CLASSIC_REFERENCE_GENES + EISENBERG_LEVANON_GENES)
