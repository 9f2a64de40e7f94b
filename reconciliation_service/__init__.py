"""
Order and payment reconciliation service
"""
