"""
Chain access services: endpoint pool, resilient reads and the outbound facade.
"""
