"""
Kakeibo - Source Package

An offline-first expense tracking core for a personal budgeting client.

DESIGN PRINCIPLES:
1. Local write first -> remote attempt second -> status reflects the outcome
2. A change the user made is never silently lost
3. Offline is not an error
4. Every sync transition is auditable
5. Storage and transport are swappable
"""

__version__ = "1.0.0"
__author__ = "Kakeibo Team"
