"""
Outage Bot - Relay cloud provider status feeds to an IRC channel.

A Python application that polls AWS, Azure and GCP status feeds,
announces each new event exactly once to an IRC channel and answers
channel members' commands.
"""

__version__ = "1.0.0"
__author__ = "Grégoire Compagnon"
__email__ = "obeone@obeone.org"
