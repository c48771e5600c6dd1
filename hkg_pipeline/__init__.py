"""
HKG Pipeline Package

Identifies stable housekeeping genes (HKGs) in bulk RNA-seq count data and uses them
as negative controls to remove unwanted variation before differential expression.
The package follows a layered architecture: domain models and statistical services,
infrastructure for I/O, logging and configuration, and an application service that
orchestrates the whole run.
"""

__version__ = "0.1.0"
