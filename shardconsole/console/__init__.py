"""Console listener, handshake, command routing and simulation bridge."""
