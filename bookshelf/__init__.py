"""Personal book library: shelves of JSON records compiled into a static site."""
