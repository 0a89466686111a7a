"""
Lara - Voice command automation package

Root package for the Lara assistant: hands-free wake word listening, bounded
command capture, intent classification and routing of spoken commands to task,
reminder, navigation and media actions.

Core modules:
- utils: Environment parsing and async helpers
- datetime_utils: Natural-language date/time resolution for reminders (IST)
- assistant: Wake word, capture, classification, routing and media redirects
"""

__version__ = "0.4.2"
