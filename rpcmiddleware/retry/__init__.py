"""Client-side retry interceptors, retry policy options and backoff functions."""