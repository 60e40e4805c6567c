"""Gateway and job service HTTP applications."""
