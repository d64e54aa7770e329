"""Tests for the ICC TIFF batch processor."""
