"""
Policy decision service application.
"""
