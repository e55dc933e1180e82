"""Pure functional core: value objects, transition tables, matching rules."""
