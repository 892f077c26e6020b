"""DataChat Insights backend: prompts, gateway client, chart normalization and rendering."""
