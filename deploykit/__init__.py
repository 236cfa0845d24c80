"""
deploykit - checkout, build, test and SSH deploy automation for Python web apps.

This package provides the pipeline definitions used by the Jenkins and
GitHub Actions configurations in this repository, and a CLI that runs them.
"""

__version__ = "0.1.0"
