"""
End-to-end tests.

Complete pipeline runs from provisioning through teardown, driven through
the Python API and the command line.
"""
