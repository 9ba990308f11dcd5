"""Channel provider plugins registered explicitly by the application."""
