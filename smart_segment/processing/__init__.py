#!/usr/bin/env python3
"""
Processing stages: chunk splitting and representative sampling on top of VAD.
"""
