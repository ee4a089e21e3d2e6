"""Business services: caching, dispatch, jobs, webhooks and the request pipeline."""
