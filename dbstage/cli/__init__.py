"""
Command-line interface for dbstage.
"""
