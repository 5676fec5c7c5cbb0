"""Core modules: configuration, database, crypto and the migration engine"""
