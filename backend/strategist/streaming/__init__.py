"""Turn response streaming: frame encoders, decoders and the multiplexer."""
