"""Find unmaintained packages in Rust projects."""
