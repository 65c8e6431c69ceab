#!/usr/bin/env python3
"""Backup runner, invoked once per run by cron or a container scheduler"""
from cronos.cli import main

if __name__ == '__main__':
    main()
