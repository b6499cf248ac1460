"""
Task board trigger poller.

Claims pending triggers from the task board, wakes each agent by running its
cron job on the agent gateway, and acknowledges the outcome.
"""

__version__ = "0.1.0"
