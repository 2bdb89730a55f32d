"""
Core components: configuration, logging, application context and the error
taxonomy shared by the data layer.
"""
