"""Generation pipeline request contract and middleware chain."""
