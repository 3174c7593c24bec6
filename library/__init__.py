# Music library: scanning, metadata, index snapshots and album art
