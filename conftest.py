pytest_plugins = ["sandbox_context.testing.plugin"]
