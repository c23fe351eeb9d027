"""Result cache, request batching and the step invoker."""
