"""Scheduled sync jobs"""
