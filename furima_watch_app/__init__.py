"""Secondhand marketplace bargain watcher for Mercari and Yahoo Flea Market."""
