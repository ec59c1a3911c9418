"""Address codecs shared by the host and tooling."""
