"""Core infrastructure shared by the federation, web and CLI layers."""
