"""Durability backends: checkpoint stores and step ledgers."""
