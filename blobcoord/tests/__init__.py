"""Test suite for the storage-coordination core."""
